"""
Signal analysis for MDFourier.

Windowing, frequency extraction, sync detection, difference accumulation
and stereo balance. Import from the submodules directly.
"""
