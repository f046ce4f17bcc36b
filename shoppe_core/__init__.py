"""Local cache and background sync layer for the GM Phoneshoppe POS app."""

__version__ = "0.1.0"
