"""
FHIR endpoint validation.

Probes a "Patient Everything" style endpoint and checks that it answers with a
searchset Bundle that actually carries patient data.
"""
import json
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urlparse

import requests

from fhir.services.results import EndpointValidationResult
from fhir.utils import get_exchange_setting

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r'\{([^{}]+)\}')

EXPECTED_RESOURCE_TYPES = ('Condition', 'Device', 'Encounter', 'Observation', 'Patient')

FHIR_ACCEPT = 'application/fhir+json'


class FHIRValidationService:
    """Validate FHIR endpoints and FHIR payloads."""

    @classmethod
    def default_headers(cls):
        return {
            'Accept': FHIR_ACCEPT,
            'User-Agent': get_exchange_setting('USER_AGENT'),
        }

    @classmethod
    def validate(cls, url, endpoint_type='', headers=None):
        """
        Probe ``url`` and validate the Bundle it returns.

        Args:
            url: Fully resolved endpoint URL
            endpoint_type: Label carried into the result (data type or endpoint type)
            headers: Extra headers such as X-API-Key / Authorization

        Returns:
            EndpointValidationResult
        """
        result = EndpointValidationResult(endpoint_url=url or '', endpoint_type=endpoint_type)

        url_error = cls.check_url(url)
        if url_error:
            result.error_message = url_error
            return result

        request_headers = cls.default_headers()
        request_headers.update(headers or {})

        logger.info(f"Validating FHIR endpoint {url} ({endpoint_type or 'unspecified'})")
        started = time.monotonic()
        try:
            response = requests.get(
                url,
                headers=request_headers,
                timeout=get_exchange_setting('OUTBOUND_TIMEOUT_SECONDS'),
            )
        except requests.Timeout:
            result.error_message = "Request timeout - endpoint may be unreachable"
            logger.warning(f"Timeout validating endpoint {url}")
            return result
        except requests.RequestException as e:
            result.error_message = f"Network error: {str(e)}"
            logger.warning(f"Network error validating endpoint {url}: {str(e)}")
            return result
        finally:
            result.response_time_ms = int((time.monotonic() - started) * 1000)

        body = response.text or ''
        result.response_sample = cls.truncate_sample(body)

        if not 200 <= response.status_code < 300:
            result.error_message = f"HTTP {response.status_code}: {response.reason}"
            return result

        if not body.strip():
            result.error_message = "Empty response from endpoint"
            return result

        result.error_message = cls.check_bundle(body)
        result.is_valid = result.error_message is None
        if result.is_valid:
            logger.info(f"Validated FHIR endpoint {url} in {result.response_time_ms}ms")
        return result

    @classmethod
    def validate_many(cls, targets, max_workers=None):
        """
        Validate several endpoints concurrently.

        Args:
            targets: iterable of dicts with ``url`` and optional ``endpoint_type``/``headers``

        Returns:
            list of EndpointValidationResult in the same order as ``targets``
        """
        targets = list(targets)
        if not targets:
            return []
        max_workers = max_workers or get_exchange_setting('VALIDATION_MAX_WORKERS')

        with ThreadPoolExecutor(max_workers=min(max_workers, len(targets))) as executor:
            futures = [
                executor.submit(
                    cls.validate,
                    target['url'],
                    target.get('endpoint_type', ''),
                    target.get('headers'),
                )
                for target in targets
            ]
            results = []
            for target, future in zip(targets, futures):
                try:
                    results.append(future.result())
                except Exception as e:
                    # One broken probe must not hide the others
                    logger.error(f"Unexpected error validating {target['url']}: {str(e)}")
                    results.append(EndpointValidationResult(
                        endpoint_url=target['url'],
                        endpoint_type=target.get('endpoint_type', ''),
                        error_message=f"Validation error: {str(e)}",
                    ))
        return results

    @staticmethod
    def check_url(url):
        """Return an error message for an unusable URL, or None."""
        if not url or not url.strip():
            return "Endpoint URL cannot be empty"
        parsed = urlparse(url.strip())
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return "Invalid URL format"
        unresolved = PLACEHOLDER_RE.findall(url)
        if unresolved:
            return f"URL contains unresolved placeholders: {', '.join(unresolved)}"
        return None

    @staticmethod
    def truncate_sample(body):
        limit = get_exchange_setting('RESPONSE_SAMPLE_LENGTH')
        return body[:limit] if body else ''

    @classmethod
    def check_bundle(cls, body):
        """
        Run the Bundle checks on a response body.

        Returns:
            str error message for the first failed check, or None when valid
        """
        try:
            bundle = json.loads(body)
        except ValueError:
            return "Response is not valid JSON"
        if not isinstance(bundle, dict):
            return "Response is not valid JSON"

        resource_type = bundle.get('resourceType')
        if resource_type != 'Bundle':
            return f"Expected 'Bundle' resourceType, but got '{resource_type}'"

        bundle_type = bundle.get('type')
        if bundle_type != 'searchset':
            return f"Expected Bundle type 'searchset', but got '{bundle_type}'"

        entries = bundle.get('entry')
        if not isinstance(entries, list) or not entries:
            return "Bundle contains no entries"

        resources = [
            entry['resource'] for entry in entries
            if isinstance(entry, dict) and isinstance(entry.get('resource'), dict)
        ]
        resource_types = {resource.get('resourceType') for resource in resources}
        patients = [resource for resource in resources if resource.get('resourceType') == 'Patient']

        if not patients and not any(cls._references_patient(resource) for resource in resources):
            return "Bundle does not contain a Patient resource or any resource referencing a Patient"

        if not resource_types.intersection(EXPECTED_RESOURCE_TYPES):
            return (
                "Bundle does not contain any expected resource types "
                f"({', '.join(EXPECTED_RESOURCE_TYPES)})"
            )

        for patient in patients:
            if not patient.get('id'):
                return "Patient resource is missing required 'id'"
            if not patient.get('name'):
                return "Patient resource is missing required 'name'"
        return None

    @staticmethod
    def _references_patient(resource):
        for key in ('subject', 'patient'):
            reference = resource.get(key)
            if isinstance(reference, dict) and str(reference.get('reference', '')).startswith('Patient/'):
                return True
        return False

    @staticmethod
    def check_resource_payload(body):
        """
        Inline check for bodies fetched during approval.

        Any FHIR resource is accepted (searchset Bundles as well as single
        resources); OperationOutcome bodies are treated as failures.

        Returns:
            str error message, or None when the payload is usable
        """
        if not body or not body.strip():
            return "Empty response from endpoint"
        try:
            payload = json.loads(body)
        except ValueError:
            return "Response is not valid JSON"
        if not isinstance(payload, dict) or not payload.get('resourceType'):
            return "Response is not a FHIR resource (missing 'resourceType')"
        if payload['resourceType'] == 'OperationOutcome':
            issues = payload.get('issue') or []
            detail = issues[0].get('diagnostics', '') if issues and isinstance(issues[0], dict) else ''
            return f"Endpoint returned an OperationOutcome{': ' + detail if detail else ''}"
        if payload['resourceType'] == 'Bundle' and not isinstance(payload.get('entry', []), list):
            return "Bundle 'entry' must be an array"
        return None
