from typing import List
import argparse
import aiohttp
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from social.graze.scribe.app.cli import configure_logging
from social.graze.scribe.app.config import Settings
from social.graze.scribe.app.metrics import NoOpMetricsClient
from social.graze.scribe.atproto.pds import PdsResolver
from social.graze.scribe.atproto.uri import parse_at_uri
from social.graze.scribe.resolve.document import DocumentResolver

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="resolve", description="Resolve document records"
    )
    parser.add_argument(
        "address", nargs="+", help="The at:// record address(es) to resolve."
    )
    parser.add_argument(
        "--pds-only",
        action="store_true",
        help="Only resolve and print the PDS endpoint of each record owner.",
    )

    args = vars(parser.parse_args())

    addresses: List[str] = args.get("address", [])

    settings = Settings()  # type: ignore
    engine = create_async_engine(str(settings.pg_dsn))
    database_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    try:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.http_timeout)
        ) as session:
            pds_resolver = PdsResolver(
                session,
                database_session_maker,
                settings.plc_hostname,
                settings.pds_cache_ttl_delta,
            )
            document_resolver = DocumentResolver(
                session,
                database_session_maker,
                pds_resolver,
                NoOpMetricsClient(),
                settings.stale_offset_delta,
            )
            for address in addresses:
                reference = parse_at_uri(address)
                if reference is None:
                    logger.error("Not a record address: %s", address)
                    continue
                try:
                    if args.get("pds_only"):
                        pds = await pds_resolver.resolve(reference.did)
                        print(f"pds {reference.did} {pds}")
                        continue
                    await document_resolver.process_document(
                        reference.did, reference.collection, reference.rkey
                    )
                    print(f"resolved {reference.uri}")
                except Exception:
                    logging.exception("Exception resolving record %s", address)
    finally:
        await engine.dispose()


def main() -> None:
    configure_logging()
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
