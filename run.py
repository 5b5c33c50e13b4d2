import sys
import argparse

# Forzar salida más fiable en consola (evita que se “pierdan” prints puntuales)
try:
    sys.stdout.reconfigure(line_buffering=True)
except Exception:
    pass

from ctx_probe.probe_models import STRATEGIES, ProbeConfigError
from ctx_probe.prober import EXIT_CONFIG_ERROR, run_main


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Probe the real maximum context window accepted by an LLM endpoint."
    )
    parser.add_argument(
        "--model",
        action="append",
        dest="models",
        help="Model id to probe (repeatable). If omitted, uses PROBE_MODEL env var.",
    )
    parser.add_argument("--strategy", choices=STRATEGIES, help="Search strategy (default: PROBE_STRATEGY or binary).")
    parser.add_argument("--min", type=int, dest="min_test_length", help="Minimum token count to test.")
    parser.add_argument("--max", type=int, dest="max_test_length", help="Maximum token count to test (default: documented model limit + 25%%, or PROBE_MAX_TOKENS).")
    parser.add_argument("--step", type=int, dest="step_size", help="Step size for the linear sweep.")
    parser.add_argument("--precision", type=int, dest="precision_threshold", help="Stop when the interval is this narrow.")
    parser.add_argument("--max-attempts", type=int, dest="max_attempts", help="Maximum number of probes per run.")
    parser.add_argument("--timeout-ms", type=int, dest="timeout_ms", help="Timeout per model call (ms).")
    parser.add_argument("--total-timeout-ms", type=int, dest="total_timeout_ms", help="Wall-clock budget per run (ms).")
    parser.add_argument("--max-retries", type=int, dest="max_retries", help="Total calls per probe on transient errors.")
    parser.add_argument(
        "--include-output-budget",
        dest="include_output_budget",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Reserve --output-length tokens for the response in every probe.",
    )
    parser.add_argument("--output-length", type=int, dest="output_length", help="Output tokens reserved per probe.")
    parser.add_argument("--output", help="Write the JSON result to this file.")
    parser.add_argument("--workers", type=int, default=1, help="Parallel runs when several --model are given.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    overrides = {
        "strategy": args.strategy,
        "min_test_length": args.min_test_length,
        "max_test_length": args.max_test_length,
        "step_size": args.step_size,
        "precision_threshold": args.precision_threshold,
        "max_attempts": args.max_attempts,
        "timeout_ms": args.timeout_ms,
        "total_timeout_ms": args.total_timeout_ms,
        "max_retries": args.max_retries,
        "include_output_budget": args.include_output_budget,
        "output_length": args.output_length,
    }
    models = [m.strip() for m in (args.models or []) if m and m.strip()]

    # FAIL-FAST ORQUESTACIÓN:
    # - run_main devuelve un exit code (int) para automatización (CI/cron)
    # - 0: convergido
    # - 10: rate-limit no resuelto
    # - 11: presupuesto de intentos / tiempo agotado
    # - 12: no se encontró frontera
    # - 13: cancelado (Ctrl+C)
    # - 20: error fatal (auth / desconocido)
    # - 30: configuración inválida
    try:
        exit_code = run_main(models, output=args.output, workers=args.workers, **overrides)
    except ProbeConfigError as e:
        print(f"ERROR: Configuración inválida: {e}", flush=True)
        raise SystemExit(EXIT_CONFIG_ERROR)
    except KeyboardInterrupt:
        print("WARN: Ejecución interrumpida por el usuario.", flush=True)
        raise SystemExit(13)
    except Exception as e:
        print(f"ERROR: Fallo no controlado en ejecución: {e}", flush=True)
        raise SystemExit(99)

    if exit_code is None:
        exit_code = 1

    raise SystemExit(int(exit_code))


if __name__ == "__main__":
    main()
