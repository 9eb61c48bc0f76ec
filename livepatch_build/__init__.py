"""
Live-patch module builder.

Turns a source patch against a running kernel into a loadable live-patch
kernel module by building the kernel twice, isolating the changed objects
and assembling their diffs into one module.
"""

__version__ = "0.1.0"
