"""
ERP Kernel

Shared substrate every ERP module instantiates:
- Identity + audit envelope on every record
- Text-encoded closed enumerations with tolerant parsing
- Minor-unit Money, Address and ContactInfo value types
- Paginated repositories over a single relational store
- A closed error taxonomy surfaced at every boundary
- Multi-level approval routing
"""

__version__ = "0.1.0"
