from calcplan.render.renderer import CodeRenderer

__all__ = ["CodeRenderer"]
