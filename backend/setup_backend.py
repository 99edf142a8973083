"""
One-time setup of the hosted backend.

Applies the row-level security policies for profiles, documents and
complaints through the `execute_sql` RPC and creates the storage buckets.
Needs SUPABASE_SERVICE_KEY; the anon key is not allowed to do either.

    python setup_backend.py [--policies-only | --buckets-only]
"""

import argparse
import logging
import sys
from typing import Dict, List

import requests

from core.config import get_settings
from core.logging_config import setup_logging
from services.backend_client import COMPLAINT_IMAGES_BUCKET, USER_DOCUMENTS_BUCKET

logger = logging.getLogger(__name__)

BUCKET_MIME_TYPES = ["image/jpeg", "image/png", "image/jpg", "application/pdf"]
BUCKET_SIZE_LIMIT = 50 * 1024 * 1024

_IS_ADMIN = (
    "EXISTS (SELECT 1 FROM public.profiles "
    "WHERE profiles.id = auth.uid() AND profiles.role = 'admin')"
)


def _policies(table: str, rules: Dict[str, str]) -> List[str]:
    statements = [f"ALTER TABLE public.{table} ENABLE ROW LEVEL SECURITY;"]
    statements += [f'DROP POLICY IF EXISTS "{name}" ON public.{table};' for name in rules]
    statements += [f'CREATE POLICY "{name}" ON public.{table} {body};' for name, body in rules.items()]
    return statements


RLS_POLICIES: Dict[str, List[str]] = {
    "profiles": _policies("profiles", {
        "Users can view their own profile": "FOR SELECT TO authenticated USING (auth.uid() = id)",
        "Users can create their own profile": "FOR INSERT TO authenticated WITH CHECK (auth.uid() = id)",
        "Users can update their own profile": "FOR UPDATE TO authenticated USING (auth.uid() = id)",
        "Admins can view all profiles": f"FOR SELECT TO authenticated USING ({_IS_ADMIN})",
        "Admins can manage all profiles":
            f"FOR ALL TO authenticated USING ({_IS_ADMIN}) WITH CHECK ({_IS_ADMIN})",
    }),
    "documents": _policies("documents", {
        "Users can view their own documents": "FOR SELECT TO authenticated USING (auth.uid() = user_id)",
        "Users can create their own documents":
            "FOR INSERT TO authenticated WITH CHECK (auth.uid() = user_id)",
        "Users can update their own documents": "FOR UPDATE TO authenticated USING (auth.uid() = user_id)",
        "Admins can view all documents": f"FOR SELECT TO authenticated USING ({_IS_ADMIN})",
        "Admins can manage all documents":
            f"FOR ALL TO authenticated USING ({_IS_ADMIN}) WITH CHECK ({_IS_ADMIN})",
    }),
    "complaints": _policies("complaints", {
        "Users can view relevant complaints": (
            "FOR SELECT TO authenticated USING (auth.uid() = reported_by OR EXISTS ("
            "SELECT 1 FROM public.profiles WHERE profiles.id = auth.uid() AND "
            "(profiles.vehicle_plate = offender_plate OR profiles.role = 'admin')))"
        ),
        "Users can create complaints": "FOR INSERT TO authenticated WITH CHECK (auth.uid() = reported_by)",
        "Users can update their own complaints": "FOR UPDATE TO authenticated USING (auth.uid() = reported_by)",
        "Admins can manage all complaints":
            f"FOR ALL TO authenticated USING ({_IS_ADMIN}) WITH CHECK ({_IS_ADMIN})",
    }),
}


def _headers(service_key: str) -> Dict[str, str]:
    return {
        "apikey": service_key,
        "Authorization": f"Bearer {service_key}",
        "Content-Type": "application/json",
    }


def apply_policies(base_url: str, service_key: str) -> bool:
    applied = total = 0
    for table, statements in RLS_POLICIES.items():
        logger.info("Setting up %s table policies...", table)
        for sql in statements:
            total += 1
            try:
                resp = requests.post(
                    f"{base_url}/rest/v1/rpc/execute_sql",
                    headers=_headers(service_key),
                    json={"sql": sql},
                    timeout=15,
                )
            except requests.RequestException as e:
                logger.error("Error executing %s policy: %s", table, e)
                continue
            if resp.status_code >= 400:
                logger.error("Error setting up %s policy: %s %s", table, resp.status_code, resp.text)
                continue
            applied += 1

    logger.info("Database RLS setup completed: %d/%d policies applied", applied, total)
    if applied < total:
        logger.warning("Some policies failed to apply; run the statements manually in the SQL editor")
    return applied == total


def create_buckets(base_url: str, service_key: str) -> bool:
    ok = True
    try:
        resp = requests.get(f"{base_url}/storage/v1/bucket", headers=_headers(service_key), timeout=15)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.error("Error listing buckets: %s", e)
        return False
    existing = {bucket["name"] for bucket in resp.json()}

    for name in (COMPLAINT_IMAGES_BUCKET, USER_DOCUMENTS_BUCKET):
        if name in existing:
            logger.info("Bucket %s already exists", name)
            continue
        resp = requests.post(
            f"{base_url}/storage/v1/bucket",
            headers=_headers(service_key),
            json={
                "id": name,
                "name": name,
                "public": True,
                "allowed_mime_types": BUCKET_MIME_TYPES,
                "file_size_limit": BUCKET_SIZE_LIMIT,
            },
            timeout=15,
        )
        if resp.status_code == 403:
            logger.warning("Bucket %s needs to be created manually in the dashboard (insufficient permissions)", name)
            ok = False
        elif resp.status_code >= 400:
            logger.error("Error creating bucket %s: %s %s", name, resp.status_code, resp.text)
            ok = False
        else:
            logger.info("Created bucket %s", name)
    return ok


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.split("\n\n")[0])
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--policies-only", action="store_true")
    group.add_argument("--buckets-only", action="store_true")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)
    if not settings.SUPABASE_SERVICE_KEY:
        logger.error("SUPABASE_SERVICE_KEY is required for backend setup")
        return 2

    base_url = settings.SUPABASE_URL.rstrip("/")
    ok = True
    if not args.buckets_only:
        ok = apply_policies(base_url, settings.SUPABASE_SERVICE_KEY) and ok
    if not args.policies_only:
        ok = create_buckets(base_url, settings.SUPABASE_SERVICE_KEY) and ok
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
