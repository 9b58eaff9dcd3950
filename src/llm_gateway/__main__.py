"""
Point d'entrée pour `python -m llm_gateway`.
"""
import argparse
import logging
import os

import uvicorn

from .config.loader import default_config_path, load_config
from .config.settings import ServerConfig


def main():
    """Fonction principale."""
    parser = argparse.ArgumentParser(description="LLM Gateway")
    parser.add_argument("--config", help="Chemin de config.toml (défaut: racine du projet)")
    parser.add_argument("--host", help="Host (défaut: [server].host ou 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Port (défaut: [server].port ou 8045)")
    parser.add_argument("--reload", action="store_true", help="Activer le reload auto")
    parser.add_argument("--log-level", default="info", help="Niveau de log (défaut: info)")

    args = parser.parse_args()

    if args.config:
        # Relu par l'application au démarrage (y compris sous --reload)
        os.environ["LLM_GATEWAY_CONFIG"] = os.path.abspath(args.config)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config_path = default_config_path()
    server = ServerConfig()
    if os.path.exists(config_path):
        server = ServerConfig.from_dict(load_config(config_path).get("server", {}))

    host = args.host or server.host
    port = args.port or server.port

    print(f"🚀 Démarrage de LLM Gateway sur {host}:{port}")

    uvicorn.run(
        "llm_gateway.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
