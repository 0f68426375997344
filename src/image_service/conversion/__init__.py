"""
Domain layer for image conversion.
Provides the provider gateway interface and a service that drives a remote
conversion job (create, upload, poll, download) so front-ends can share the
same core logic.
"""

from .interfaces import ExportArtifact, ProviderGateway, ProviderResponse, ProviderTransportError, UploadTarget
from .models import ConversionError, ConversionRequest, ConversionResult, ConvertedArtifact, ErrorKind
from .service import ConversionService, JobPhase, JobRecord
