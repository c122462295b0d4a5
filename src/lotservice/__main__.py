from __future__ import annotations

import uvicorn

from lotservice.settings import ServiceSettings


def main() -> None:
    settings = ServiceSettings()
    uvicorn.run(
        "lotservice.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )


if __name__ == "__main__":
    main()
