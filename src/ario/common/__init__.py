"""Domain facades over the process and legacy contract backends."""
