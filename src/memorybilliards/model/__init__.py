"""
The MODEL layer contains the data structures of a run: table geometry,
the memory field, the density accumulator and checkpoint I/O.
It has no knowledge of the trajectory loop or of image encoding.
"""
