"""Provisioners for the AWS resources behind a static site."""

from .base import BaseProvisioner, ChangeResult, ChangeType
from .probe import ResourceDescriptor, ResourceProbe
from .dns import ChangeHandle, DnsRecord, DnsSynchronizer
from .certificate import CertificateDescription, CertificateHandle, CertificateIssuer, ValidationRecord
from .distribution import DistributionConfigurator
from .hardening import HardeningResult, SecurityHardener
from .storage import StorageManager

__all__ = [
    'BaseProvisioner',
    'ChangeResult',
    'ChangeType',
    'ResourceDescriptor',
    'ResourceProbe',
    'ChangeHandle',
    'DnsRecord',
    'DnsSynchronizer',
    'CertificateDescription',
    'CertificateHandle',
    'CertificateIssuer',
    'ValidationRecord',
    'DistributionConfigurator',
    'HardeningResult',
    'SecurityHardener',
    'StorageManager',
]
