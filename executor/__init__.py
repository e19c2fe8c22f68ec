"""Executor node: task admission, MPC round coordination and result publishing."""

__version__ = "0.1.0"
