"""Test package for the pinball accuracy trainer.

Core modules are tested directly with a fake clock and fixed seeds; the
pygame shell is exercised headlessly using SDL's dummy video driver. To run
these tests, execute ``pytest`` from the project root.
"""
