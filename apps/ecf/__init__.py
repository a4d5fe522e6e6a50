"""
Dominican Republic e-CF (Comprobante Fiscal Electrónico) compliance core.

Sequence registry, compliance validation, invoice lifecycle and the
72-hour contingency monitor for DGII electronic invoicing.
"""
