"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from src.core.exceptions import (
    ApplicationException,
    DomainException,
    ValidationException,
    ResourceNotFoundException,
    PermissionDeniedException,
    QuotaExceededException,
    ExternalServiceException,
    ServiceUnavailableException,
    ModelTimeoutException,
    PayloadTooLargeException,
    ModelResponseException,
    VectorStoreException,
    QueueException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "ValidationException",
    "ResourceNotFoundException",
    "PermissionDeniedException",
    "QuotaExceededException",
    "ExternalServiceException",
    "ServiceUnavailableException",
    "ModelTimeoutException",
    "PayloadTooLargeException",
    "ModelResponseException",
    "VectorStoreException",
    "QueueException",
]
