"""Task hooks shipped with tfwrap."""
