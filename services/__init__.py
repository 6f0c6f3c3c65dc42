"""
Trade Chain Simulator Services

Compliance tips, advisory digest/client and Excel export built on top of
simulation results.
"""

from .compliance_service import (
    CompliancePoint,
    ComplianceReport,
    PaymentTermStrategy,
    build_compliance_report,
    build_executive_summary,
    get_payment_term_strategy,
)
from .advisory_service import (
    build_advisory_digest,
    is_advisory_configured,
    request_advisory,
)
from .simulation_export import create_simulation_excel

__all__ = [
    # Compliance
    'CompliancePoint',
    'ComplianceReport',
    'PaymentTermStrategy',
    'build_compliance_report',
    'build_executive_summary',
    'get_payment_term_strategy',
    # Advisory
    'build_advisory_digest',
    'is_advisory_configured',
    'request_advisory',
    # Export
    'create_simulation_excel',
]
