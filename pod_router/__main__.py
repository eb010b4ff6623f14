import uvicorn

from pod_router.vars import HOST, LOG_LEVEL, PORT


def main() -> None:
    uvicorn.run(
        "pod_router.server:app",
        host=HOST,
        port=int(PORT),
        log_level=LOG_LEVEL,
        proxy_headers=True,
        forwarded_allow_ips="*",
    )


if __name__ == "__main__":
    main()
