import sys
import uvicorn

from reqtest.config import SERVER_HOST, SERVER_PORT, configure_logging

if sys.platform == "win32":
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

if __name__ == "__main__":
    configure_logging()
    uvicorn.run(
        "reqtest.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
        reload_dirs=["reqtest"],
    )
