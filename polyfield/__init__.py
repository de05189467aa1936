from polyfield.engine_app import PolyFieldEngine

__all__ = ["PolyFieldEngine"]
