# prober.py
"""
Raíz de composición: monta cliente, generador, precios y ledger, y expone run(config).
La UI / CLI solo habla con run() / run_batch(); nunca toca Strategy ni Executor.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .cancellation import CancellationSignal
from .config import build_run_config
from .github_models_client import GitHubModelsClient
from .model_catalog import DEFAULT_CATALOG, ModelCatalog
from .outcome_classifier import OutcomeClassifier
from .pricing import PricingTable
from .probe_executor import ProbeExecutor
from .probe_models import (
    Classification,
    ProbeConfigError,
    ProbeRunConfig,
    ProbeRunFailure,
    ProbeRunResult,
    StopCondition,
)
from .probe_orchestrator import ProbeOrchestrator, ProgressListener
from .sample_generator import PaddingSampleGenerator
from .usage_ledger import UsageLedger
from .utils_logging import log_run_failure, log_run_summary
from .utils_text import dump_run_result, safe_model_slug

# Instancias por defecto SOLO para comodidad del CLI; el motor las recibe inyectadas.
DEFAULT_LEDGER = UsageLedger()
DEFAULT_PRICING = PricingTable()

# Exit codes para automatización (CI/cron)
EXIT_OK = 0
EXIT_RATE_LIMITED = 10
EXIT_BUDGET_EXHAUSTED = 11
EXIT_BOUNDARY_NOT_FOUND = 12
EXIT_CANCELLED = 13
EXIT_FATAL = 20
EXIT_CONFIG_ERROR = 30


def run(
    config: ProbeRunConfig,
    client=None,
    generator=None,
    pricing: Optional[PricingTable] = None,
    ledger: Optional[UsageLedger] = None,
    cancel: Optional[CancellationSignal] = None,
    listeners: Optional[List[ProgressListener]] = None,
    classifier: Optional[OutcomeClassifier] = None,
    catalog: Optional[ModelCatalog] = None,
) -> ProbeRunResult | ProbeRunFailure:
    """Punto de entrada principal: una ejecución completa para un modelo."""
    config = config.validate()
    if config.documented_limit is None:
        documented = (catalog or DEFAULT_CATALOG).documented_limit(config.model)
        if documented is not None:
            config = replace(config, documented_limit=documented)
    cancel = cancel or CancellationSignal()
    executor = ProbeExecutor(
        config,
        client=client or GitHubModelsClient(config.model),
        generator=generator or PaddingSampleGenerator(),
        pricing=pricing or DEFAULT_PRICING,
        ledger=ledger if ledger is not None else DEFAULT_LEDGER,
        classifier=classifier,
        cancel=cancel,
    )
    orchestrator = ProbeOrchestrator(config, executor, cancel=cancel, listeners=listeners)
    return orchestrator.run()


def run_batch(
    configs: Iterable[ProbeRunConfig],
    max_workers: int = 3,
    client_factory: Optional[Callable[[ProbeRunConfig], object]] = None,
    **run_kwargs,
) -> List[ProbeRunResult | ProbeRunFailure]:
    """
    Ejecuciones independientes en paralelo (una por config). Cada una tiene su propia
    estrategia/executor; solo comparten la tabla de precios y el ledger.
    Devuelve los resultados en el mismo orden que las configs.
    """
    configs = [c.validate() for c in configs]
    if not configs:
        return []

    def _one(cfg: ProbeRunConfig):
        client = client_factory(cfg) if client_factory else None
        return run(cfg, client=client, **run_kwargs)

    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(configs)))) as pool:
        return list(pool.map(_one, configs))


def exit_code_for(result: ProbeRunResult | ProbeRunFailure) -> int:
    if isinstance(result, ProbeRunFailure):
        return EXIT_FATAL
    if result.stop_condition == StopCondition.CONVERGED_WITHIN_PRECISION:
        return EXIT_OK
    if result.stop_condition == StopCondition.BOUNDARY_NOT_FOUND:
        return EXIT_BOUNDARY_NOT_FOUND
    if result.stop_condition == StopCondition.CANCELLED:
        return EXIT_CANCELLED
    if result.history and result.history[-1].classification == Classification.RATE_LIMITED:
        return EXIT_RATE_LIMITED
    return EXIT_BUDGET_EXHAUSTED


def run_main(models: List[str], output: Optional[str] = None, workers: int = 1, **overrides) -> int:
    """
    Ejecución desde CLI. Devuelve exit code:
    - 0: convergido
    - 10: rate limit no resuelto
    - 11: presupuesto de intentos / tiempo agotado
    - 12: no se encontró frontera (el mínimo ya falla)
    - 13: cancelado
    - 20: error fatal (auth / desconocido)
    - 30: configuración inválida
    """
    try:
        configs = [build_run_config(model=m, **overrides) for m in models] if models else [
            build_run_config(**overrides)
        ]
    except ProbeConfigError as e:
        print(f"ERROR: Configuración inválida: {e}", flush=True)
        return EXIT_CONFIG_ERROR

    print(f"--- Token probe: {', '.join(c.model for c in configs)} ---", flush=True)

    try:
        if len(configs) == 1:
            results = [run(configs[0])]
        else:
            results = run_batch(configs, max_workers=workers)
    except ProbeConfigError as e:
        print(f"ERROR: Configuración inválida durante la búsqueda: {e}", flush=True)
        return EXIT_CONFIG_ERROR

    codes = []
    for cfg, result in zip(configs, results):
        if isinstance(result, ProbeRunFailure):
            log_run_failure(result)
        else:
            log_run_summary(result)
        if output:
            filename = output
            if len(configs) > 1:
                filename = f"{output.rsplit('.json', 1)[0]}_{safe_model_slug(cfg.model)}.json"
            dump_run_result(result.to_json(), cfg.model, filename=filename)
        codes.append(exit_code_for(result))

    stats = DEFAULT_LEDGER.stats()
    print(
        f"INFO: Llamadas totales={stats['total_calls']} | tokens={stats['total_tokens']:,} "
        f"| coste=${stats['total_cost']:.4f}",
        flush=True,
    )
    return max(codes) if codes else EXIT_OK
