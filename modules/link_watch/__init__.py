# Keep this small; `run` is what the runner resolves for "modules.link_watch".
from . import lib  # so: from modules.link_watch import lib
from .main import run  # so: from modules.link_watch import run

__all__ = ["lib", "run"]
