"""
Configuration centrale du service de checkout.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Stripe), CORS/hosts
- Expose les paramètres économiques du checkout (acompte, frais plateforme)
- Expose le budget de réconciliation (intervalle et nombre de tentatives de polling)
"""
# wedding_checkout.config
from pathlib import Path
import math
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _positive_float(name: str, default: float) -> float:
    """Lit un float strictement positif, sinon retourne la valeur par défaut."""
    try:
        value = float(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default
    return value if value > 0 and math.isfinite(value) else default

def _positive_int(name: str, default: int) -> int:
    """Lit un entier strictement positif, sinon retourne la valeur par défaut."""
    try:
        value = int(_clean_env(os.getenv(name)) or default)
    except ValueError:
        return default
    return value if value > 0 and math.isfinite(value) else default

# Supabase: URLs et clés (public/anon/service)
# - SUPABASE_URL peut parfois être sans schéma: on préfixe en https:// si nécessaire
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL") or "")
SUPABASE_ANON = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# CORS (dev)
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h.strip()]
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")

# Stripe: clé secrète et secret webhook
STRIPE_SECRET_KEY = _clean_env(os.getenv("STRIPE_SECRET_KEY") or "")
STRIPE_WEBHOOK_SECRET = _clean_env(os.getenv("STRIPE_WEBHOOK_SECRET") or "")

# Économie du checkout (montants en centimes)
# - DEPOSIT_RATE: fraction du sous-total facturée en acompte
# - PLATFORM_FEE_CENTS: frais fixes, une seule fois par panier non vide
DEPOSIT_RATE = _positive_float("DEPOSIT_RATE", 0.5)
PLATFORM_FEE_CENTS = _positive_int("PLATFORM_FEE_CENTS", 5000)
CURRENCY = "usd"
PAYMENT_TYPE_DEPOSIT = "deposit"
# Plafond d'une remise de parrainage (aucun référentiel de parrainage côté serveur)
MAX_REFERRAL_DISCOUNT_CENTS = _positive_int("MAX_REFERRAL_DISCOUNT_CENTS", 10000)

# Réconciliation: 2s x 30 tentatives par défaut (~60s), toujours fini
RECONCILE_INTERVAL_SECONDS = _positive_float("RECONCILE_INTERVAL_SECONDS", 2.0)
RECONCILE_MAX_ATTEMPTS = _positive_int("RECONCILE_MAX_ATTEMPTS", 30)

# URLs du backend consommées par l'orchestration côté client
BASE_URL = _clean_env(os.getenv("BASE_URL") or "http://localhost:8000")
CHARGE_ENDPOINT_PATH = os.getenv("CHARGE_ENDPOINT_PATH", "/api/v1/checkout/charge")
BOOKING_STATUS_PATH = os.getenv("BOOKING_STATUS_PATH", "/api/v1/bookings/status")

# Retour après vérification renforcée (3D Secure, Affirm)
STEP_UP_RETURN_PATH = os.getenv("STEP_UP_RETURN_PATH", "/checkout/success")

# Contact support affiché si la confirmation n'arrive pas dans le budget
SUPPORT_EMAIL = _clean_env(os.getenv("SUPPORT_EMAIL") or "support@example.com")
