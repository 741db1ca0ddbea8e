"""Shared helpers: logging, image I/O, vector math, drawing."""
