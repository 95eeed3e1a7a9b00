"""therapychat - streaming core of a therapeutic chat service."""
