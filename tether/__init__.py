"""Tether - a console agent that connects a local text-completion model to tools."""

__version__ = "0.1.0"

from tether.agent import Agent
from tether.config import Config
from tether.main import main

__all__ = ["Agent", "Config", "main", "__version__"]
