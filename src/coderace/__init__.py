"""coderace - dispatch coding tasks to CLI agents in tmux and rank them."""

__version__ = "0.1.0"
