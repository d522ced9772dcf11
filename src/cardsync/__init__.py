"""cardsync - Copy new photos from a Wi-Fi SD card to a local folder."""

__version__ = "0.1.0"
