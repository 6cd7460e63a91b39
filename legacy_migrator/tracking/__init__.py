"""
Migration tracking: filesystem probe and per-unit state machine.
"""
