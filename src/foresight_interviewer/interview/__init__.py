"""
Interview module: data model, transcript store, plan bookkeeping and the
session stage machine.
"""
