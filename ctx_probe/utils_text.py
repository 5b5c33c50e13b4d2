import re
import time


def clean_token(token_str):
    """Limpia el token para evitar errores de formato 400."""
    if not token_str:
        return ""
    t = token_str.strip()
    t = t.replace('"', '').replace("'", "")
    if t.lower().startswith("bearer "):
        t = t[7:].strip()
    t = "".join(char for char in t if 32 < ord(char) < 127)
    return t


def strip_html_tags(text):
    """Elimina etiquetas HTML/XML (páginas de error de gateways) y compacta espacios."""
    if not text:
        return ""
    clean = re.compile('<.*?>')
    text = re.sub(clean, ' ', text)
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def preview(text, max_chars=500):
    body = (text or "").strip()
    if len(body) > max_chars:
        body = body[:max_chars] + " ...[truncado]"
    return body


def safe_model_slug(model):
    return re.sub(r"[^A-Za-z0-9._-]+", "_", model or "model")


def dump_run_result(text, model, filename=None):
    """
    Guarda el resultado serializado (JSON) de una ejecución en un fichero.
    Devuelve la ruta escrita o None si falla.
    """
    if not filename:
        ts = time.strftime("%Y%m%d_%H%M%S")
        filename = f"probe_result_{safe_model_slug(model)}_{ts}.json"
    try:
        with open(filename, "w", encoding="utf-8") as f:
            f.write(text)
        print(f"INFO: Resultado del probe guardado en: {filename}", flush=True)
        return filename
    except OSError as e:
        print(f"ERROR: No se pudo guardar el resultado del probe: {e}", flush=True)
        return None
