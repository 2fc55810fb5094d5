"""
The WatchManager runs the operator: a watch thread per watched kind feeds
events through the event router into a work queue per managed kind, and a pool
of worker threads per kind drains each queue through the ReconcileManager.
"""

# Standard
from datetime import datetime, timedelta
from typing import Dict, List, Optional
import threading

# First Party
import alog

# Local
from .. import config
from ..controllers.base import Controller
from ..deploy_manager import DeployManagerBase, KubeWatchEvent
from ..exceptions import assert_cluster
from ..managed_object import ManagedObject, ResourceKey
from ..reconcile import ReconcileManager, ReconciliationResult
from .router import EventRouter, get_watch_namespace
from .timer import TimerThread
from .work_queue import WorkQueue

log = alog.use_channel("WATCH")

# Seconds a worker waits on its queue before checking for shutdown
WORKER_POLL_SECONDS = 0.5


class WatchThread(threading.Thread):
    """Streams events of one kind into the manager, reissuing the watch when
    the stream ends or fails
    """

    def __init__(
        self,
        manager: "WatchManager",
        kind: str,
        api_version: str,
        timeout: Optional[int] = None,
    ):
        super().__init__(name=f"watch_{kind.lower()}", daemon=True)
        self.manager = manager
        self.kind = kind
        self.api_version = api_version
        self.namespace = get_watch_namespace(kind)
        self.timeout = timeout or config.watch_timeout_seconds
        self.shutdown = threading.Event()

    def run(self):
        while not self.shutdown.is_set():
            try:
                for event in self.manager.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    timeout=self.timeout,
                ):
                    if self.shutdown.is_set():
                        return
                    self.manager.handle_event(event)
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s: %s",
                    self.kind,
                    repr(exc),
                    exc_info=exc,
                )
                self.shutdown.wait(config.watch_retry_seconds)

    def stop_thread(self):
        log.info("Stopping %s", self.name)
        self.shutdown.set()


class WatchManager:
    """Wires the watches, queues and workers of a set of controllers"""

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        controllers: List[Controller],
        workers_per_kind: Optional[int] = None,
        watch_timeout: Optional[int] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Deploy manager used for watches and reconciles
            controllers:  List[Controller]
                The controllers to run, one per managed kind
            workers_per_kind:  Optional[int]
                Override for the worker pool size of each kind
            watch_timeout:  Optional[int]
                Override for the timeout of each watch request
        """
        self.deploy_manager = deploy_manager
        self.controllers: Dict[str, Controller] = {
            controller.kind: controller for controller in controllers
        }
        self.reconcile_manager = ReconcileManager(deploy_manager)
        self.router = EventRouter(deploy_manager)
        self.timer = TimerThread()
        self.queues: Dict[str, WorkQueue] = {
            kind: WorkQueue(kind, self.timer) for kind in self.controllers
        }
        self.watch_threads = [
            WatchThread(self, kind, api_version, timeout=watch_timeout)
            for kind, api_version in self.router.watched_kinds()
        ]
        workers_per_kind = workers_per_kind or config.workers_per_kind
        self.workers = [
            threading.Thread(
                target=self._work,
                args=(kind,),
                name=f"reconcile_{kind.lower()}_{idx}",
                daemon=True,
            )
            for kind in self.controllers
            for idx in range(workers_per_kind)
        ]
        self._shutdown = threading.Event()

    ## Public ##################################################################

    def watch(self):
        """Start all threads and schedule the periodic resync"""
        log.info("Starting watches for %s", list(self.controllers))
        self.timer.start_thread()
        for thread in self.watch_threads + self.workers:
            thread.start()
        self._schedule_resync()

    def wait(self):
        """Block until the manager is stopped"""
        self._shutdown.wait()

    def stop(self):
        """Stop all threads. Passes already running are abandoned, not rolled
        back.
        """
        log.info("Stopping watch manager")
        self._shutdown.set()
        for thread in self.watch_threads:
            thread.stop_thread()
        for queue in self.queues.values():
            queue.shut_down()
        self.timer.stop_thread()

    def handle_event(self, event: KubeWatchEvent):
        """Route a watch event to the queues of the managed objects it applies
        to
        """
        for target_kind, key in self.router.route(event.resource, event.type):
            self.enqueue(target_kind, key)

    def enqueue(self, kind: str, key: ResourceKey):
        queue = self.queues.get(kind)
        if queue is None:
            log.debug2("No controller for %s. Dropping %s", kind, key)
            return
        queue.add(_queue_key(key))

    def resync(self):
        """Enqueue every existing object of each managed kind"""
        for kind, controller in self.controllers.items():
            success, objs = self.deploy_manager.filter_objects_current_state(
                kind=kind,
                namespace=get_watch_namespace(kind),
                api_version=controller.api_version,
            )
            assert_cluster(success, f"Failed to list {kind} for resync")
            log.debug("Resyncing %d %s objects", len(objs), kind)
            for obj in objs:
                self.enqueue(kind, ManagedObject(obj).key)

    def process_next(self, kind: str, timeout: Optional[float] = None) -> bool:
        """Reconcile the next key of the kind's queue

        Returns:
            processed:  bool
                False if no key was available
        """
        queue = self.queues[kind]
        key = queue.get(timeout=timeout)
        if key is None:
            return False
        try:
            result = self.reconcile_manager.safe_reconcile(self.controllers[kind], key)
            self._handle_result(queue, key, result)
        finally:
            queue.done(key)
        return True

    ## Implementation Details ##################################################

    def _work(self, kind: str):
        while not self._shutdown.is_set():
            self.process_next(kind, timeout=WORKER_POLL_SECONDS)

    @staticmethod
    def _handle_result(queue: WorkQueue, key: ResourceKey, result: ReconciliationResult):
        if not result.requeue:
            queue.forget(key)
            return
        params = result.requeue_params
        if params is None or params.rate_limited:
            delay = queue.add_rate_limited(key)
            log.debug("Requeuing %s with backoff of %ss", key, delay)
            return
        queue.forget(key)
        queue.add_after(key, params.requeue_after.total_seconds())

    def _schedule_resync(self):
        self.timer.put_event(
            datetime.now() + timedelta(seconds=config.resync_period_seconds),
            self._resync_and_reschedule,
        )

    def _resync_and_reschedule(self):
        try:
            self.resync()
        finally:
            self._schedule_resync()


def _queue_key(key: ResourceKey) -> ResourceKey:
    """Queue keys carry no apiVersion so that equal objects coalesce"""
    return ResourceKey(kind=key.kind, name=key.name, namespace=key.namespace)
