import os

import uvicorn


def main():
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))

    cert_file = os.getenv("SSL_CERTFILE", "cert.pem")
    key_file = os.getenv("SSL_KEYFILE", "key.pem")
    use_tls = os.path.exists(cert_file) and os.path.exists(key_file)

    scheme = "https" if use_tls else "http"
    print("\n" + "=" * 60)
    print("SERVER STARTING")
    print(f"URL:      {scheme}://{host}:{port}")
    if not use_tls:
        print("NOTE:     No certificate found, serving plain HTTP.")
    print("=" * 60 + "\n")

    uvicorn.run(
        "request_shield.main:app",
        host=host,
        port=port,
        ssl_keyfile=key_file if use_tls else None,
        ssl_certfile=cert_file if use_tls else None,
        # Rate-limit and session state live in this process; one worker only
        workers=1,
    )


if __name__ == "__main__":
    main()
