"""
Consultation booking engine: availability, booking consistency and
provider synchronization.
"""
