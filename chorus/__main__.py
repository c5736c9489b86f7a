"""Run the CHORUS server: python -m chorus"""

import uvicorn

from chorus.config import settings


def main() -> None:
    uvicorn.run(
        "chorus.api.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.env == "development",
    )


if __name__ == "__main__":
    main()
