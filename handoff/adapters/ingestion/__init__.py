"""Order sources feeding the IngestionPort.

- Demo generator (random orders plus simulated kitchen progress)

Production sources (point-of-sale, passenger app) arrive over the
webhook adapter instead.
"""
