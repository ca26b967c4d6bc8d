"""Project configuration package for the hospital management system."""
