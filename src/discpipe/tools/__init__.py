"""External tool wrappers.

Subprocess execution with bounded output capture, and the MakeMKV robot
protocol built on top of it.
"""
