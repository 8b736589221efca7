"""Operations tooling for the Flight Companion Platform."""

__version__ = "1.0.0"
