"""Target probers."""
