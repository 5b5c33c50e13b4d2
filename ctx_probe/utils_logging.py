from .llm_probe_config import LOG_PROBE_DECISIONS


def _log_probe(msg: str):
    if LOG_PROBE_DECISIONS:
        print(f"INFO PROBE: {msg}", flush=True)


def log_probe_start(cfg):
    _log_probe(
        f"Inicio model={cfg.model} | strategy={cfg.strategy} | rango=[{cfg.min_test_length}, {cfg.max_test_length}] "
        f"| precision={cfg.precision_threshold} | max_attempts={cfg.max_attempts} "
        f"| output_budget={cfg.requested_output_tokens}"
    )


def log_probe_outcome(outcome):
    _log_probe(
        f"#{outcome.attempt_index} target={outcome.target_tokens} enviado~{outcome.requested_tokens} "
        f"-> {outcome.classification.value} | in={outcome.input_tokens} out={outcome.output_tokens} "
        f"| {outcome.latency_ms:.0f}ms | ${outcome.estimated_cost:.4f} | llamadas={outcome.call_attempts}"
    )


def log_run_summary(result):
    ci = result.confidence_interval
    pct = result.latency_percentiles

    print("\n" + "=" * 60, flush=True)
    print(f"RESULTADO TOKEN PROBE – {result.model}", flush=True)
    print(f"- Parada: {result.stop_condition.value}", flush=True)

    if result.point_estimate_max_tokens is None:
        print("- Máximo aceptado: NO ENCONTRADO (ningún probe fue aceptado)", flush=True)
    else:
        cota = " (cota inferior: techo desconocido)" if result.ceiling_unknown else ""
        print(f"- Máximo aceptado: {result.point_estimate_max_tokens:,} tokens{cota}", flush=True)
        print(f"- Uso recomendado (80%): {result.recommended_safe_tokens:,} tokens", flush=True)
        print(f"- Uso conservador (60%): {result.recommended_conservative_tokens:,} tokens", flush=True)
        if result.max_reported_input_tokens is not None and result.max_reported_input_tokens != result.point_estimate_max_tokens:
            print(
                f"- Input reportado por el proveedor (con overhead): {result.max_reported_input_tokens:,} tokens",
                flush=True,
            )

    if result.documented_limit is not None:
        if result.documented_deviation_tokens is None:
            print(f"- Límite documentado: {result.documented_limit:,} tokens", flush=True)
        else:
            print(
                f"- Límite documentado: {result.documented_limit:,} tokens | desviación="
                f"{result.documented_deviation_tokens:+,} ({result.documented_deviation_percentage:+.1f}%)",
                flush=True,
            )

    print(
        f"- Intervalo: [{ci.min:,}, {ci.max:,}] | ancho={result.interval_width_tokens:,} tokens "
        f"| precisión relativa={result.precision_percentage:.1f}%",
        flush=True,
    )
    print(f"- Intentos: {result.attempts} | éxito={result.success_rate * 100:.1f}%", flush=True)
    print(
        f"- Latencia media={result.average_latency_ms:.0f}ms | p50={pct.get('p50', 0):.0f} "
        f"p90={pct.get('p90', 0):.0f} p95={pct.get('p95', 0):.0f} p99={pct.get('p99', 0):.0f}",
        flush=True,
    )
    print(
        f"- Throughput: {result.throughput_tokens_per_sec:.0f} tokens/s | Coste total: ${result.total_cost:.4f}",
        flush=True,
    )
    print("=" * 60 + "\n", flush=True)


def log_run_failure(failure):
    print("\n" + "=" * 60, flush=True)
    print(f"TOKEN PROBE ABORTADO – {failure.model}", flush=True)
    print(f"- Motivo: {failure.reason}", flush=True)
    print(f"- Clasificación: {failure.classification.value} | intentos={failure.attempts}", flush=True)
    print("- No se reporta estimación.", flush=True)
    print("=" * 60 + "\n", flush=True)
