"""
Wire-level pieces of MQTT 3.1: packet models, the codec and the error hierarchy.
These modules hold no connection state.
"""
