"""
loop_render: batch worker that turns a (video, soundtrack) pair into one
duration-matched artifact and publishes it.
"""

__version__ = "1.0.0"
