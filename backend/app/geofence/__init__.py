"""
geofence — Safety-classified zones and the containment lookup interface.
"""
