"""astro-sequencer: unattended astrophotography session automation.

Packages:
    devices: identities, registry, lifecycle wrappers, setups
    drivers: capability contracts and the digital twin backend
    sequencing: the imaging session engine
    data: frame writers
    observability: structured logging
"""

__version__ = "0.1.0"
