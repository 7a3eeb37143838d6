from beruang.cli import main

raise SystemExit(main())
