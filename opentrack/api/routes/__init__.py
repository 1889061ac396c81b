from . import pixel, tracking

__all__ = [
    "pixel",
    "tracking",
]
