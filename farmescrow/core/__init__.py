"""
FarmEscrow core: keys, encodings, data model, configuration.
"""
