from .accelerometer import SimulatedMotionProvider

__all__ = ["SimulatedMotionProvider"]
