"""PackStudio: AI product design, tech packs and supplier RFQs."""

__version__ = "1.0.0"
