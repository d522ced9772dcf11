"""Client side of cardsync: talking to the card and syncing its files."""
